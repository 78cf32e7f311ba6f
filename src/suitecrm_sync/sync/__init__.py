"""Survey-completion sync pipeline and its application wiring."""
