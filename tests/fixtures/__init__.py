"""Test fixtures package: tree models shared by the unit tests and CLI tests."""
