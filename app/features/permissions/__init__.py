"""
Organization-scoped action authorization.

Default role x action matrix, per-organization overrides, module
visibility, and guards for protecting handlers.
"""
