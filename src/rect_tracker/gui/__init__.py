"""PySide6 preview widgets. Importing this package requires PySide6."""
