"""In-app notifications and the notification scheduler."""
