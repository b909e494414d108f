"""SQL dump generation — table sources and statement serialization."""
