"""Command-line tools for kbindex.

- ``kbindex index`` runs the full pipeline on a file.
- ``kbindex split`` prints the chunks a strategy produces.
- ``kbindex status`` / ``kbindex repair`` inspect and fix stored documents.
- ``kbindex models`` lists embedding models per provider.
"""
