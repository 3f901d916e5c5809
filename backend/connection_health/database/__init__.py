"""Database engines and sessions for the user-record stores."""
