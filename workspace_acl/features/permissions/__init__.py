"""
Access control feature module.

Evaluates read/write/delete/manage on the workspace > board > column > cell
hierarchy and on items, filters item rows and columns per user, and assigns
roles and permission overrides.
"""
