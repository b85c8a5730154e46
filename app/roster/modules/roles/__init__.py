"""
Roles module.

- Roles link a person to a group with a role type of that group's type
- A role starting after today is stored as a future role and converted later
- Changing the type or group of a role replaces it (new role saved, old one destroyed)
- Old roles are archived, young ones and future ones are deleted
"""
