"""Version information for bitbucket-tools.

Single source of truth for version number.
Follows PEP 440 and semantic versioning principles.
"""

__version__ = "1.2.0"
__version_info__ = tuple(int(part) for part in __version__.split("."))

# Version history:
# 1.2.0 - Exhaustive traversal item cap, page/all precedence, legacy limit alias
# 1.1.0 - Pipeline runs/steps, PR tasks and statuses listings
# 1.0.0 - Initial release (repositories, pull requests, comments)
