"""Event payloads handed to the notification dispatcher."""
