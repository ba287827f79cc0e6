"""Sandbox collaborators: editor tool, bash parameters, and local sandbox."""
