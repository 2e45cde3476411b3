"""Calendar pages, templates and static assets."""
