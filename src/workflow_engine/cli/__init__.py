"""Workflow engine command line interface."""
