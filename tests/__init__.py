"""
Test suite for metasync.

This package contains unit tests for every metasync component:
- Configuration, exceptions and database introspection
- Catalog storage, caching and entity models
- Diff computation, change application and many to many derivation
- The sync service and the command-line interface
"""
