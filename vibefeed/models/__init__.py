from vibefeed.models.content import (
    EngagementHourly,
    Gig,
    Post,
    PostMedia,
    Project,
    ProjectImage,
    gig_ai_tools,
    gig_tech_stacks,
    project_ai_tools,
    project_tech_stacks,
)
from vibefeed.models.social import (
    Bookmark,
    DismissedSuggestion,
    Follow,
    Like,
    Repost,
    UserBlock,
    UserMute,
)
from vibefeed.models.user import User

__all__ = [
    "User",
    "Post",
    "PostMedia",
    "Project",
    "ProjectImage",
    "Gig",
    "EngagementHourly",
    "project_ai_tools",
    "project_tech_stacks",
    "gig_ai_tools",
    "gig_tech_stacks",
    "Follow",
    "Like",
    "Bookmark",
    "Repost",
    "UserBlock",
    "UserMute",
    "DismissedSuggestion",
]
