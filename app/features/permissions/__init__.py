"""
Permission management feature module.

Resolves effective permissions by layering role defaults, permission
templates and custom per-user overrides for an (organization, team) scope.
"""
