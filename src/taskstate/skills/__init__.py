"""Skills manifest: discovery (expensive scan) + cached resolution.

Cache layout:
    ~/.taskstate/cache/
    └── skills-manifest.json           # {"_meta": {...}, "skills": [...]}

Skill search order: <cwd>/.taskstate/skills, then configured paths
(default ~/.taskstate/skills).
"""
