"""Core background-job logic for lumitag."""
