"""Domain models and entities.

Pure data: the schema grammar, the contract model and the run models. No
HTTP, no settings.
"""
