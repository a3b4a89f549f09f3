"""
Management hierarchy feature module.

Tracks who manages whom inside an organization, team-scoped or
organization-wide, and answers direct/transitive reporting queries.
"""
