"""wxPython glue for the desktop client."""
