"""Discord integration: bot process, role/DM gateway and message text."""
