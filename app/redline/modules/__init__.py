"""Feature modules. Each one owns its models, service layer and blueprint."""
