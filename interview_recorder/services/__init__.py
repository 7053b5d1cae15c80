"""Session core: authentication, ordering rules and persistence."""
