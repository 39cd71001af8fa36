"""
Soma Test Suite
===============

Test Organization
-----------------
- tests/unit/          : Services and engine against in-memory SQLite
- tests/integration/   : PostgreSQL testcontainer (marked `integration`)

Testing Philosophy
------------------
- Unit tests run the real DatabaseService, not mocks of it
- Integration tests cover row locking and ON CONFLICT races
- Use pytest markers to categorize and selectively run tests
"""
