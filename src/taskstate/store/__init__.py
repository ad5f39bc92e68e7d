"""Persistent task state: JSON data files + numbered backups.

Layout:
    <project>/.taskstate/
    ├── todo.json                      # Active tasks
    ├── config.json                    # Project settings
    ├── todo-archive.json              # Archived tasks
    ├── todo-log.jsonl                 # Append-only audit log
    └── backups/
        ├── todo.json.1                # Newest copy
        └── todo.json.2 ...            # Older copies, bounded by max_backups
"""
