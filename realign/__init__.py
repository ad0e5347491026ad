"""realign -- restructures an infrastructure-as-code repository in phases."""

__version__ = "0.1.0"
