"""Bridge services: filtering, conversation, webrevs, mail and storage."""
