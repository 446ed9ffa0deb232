"""Command line tool for preparing and applying configuration to GKE clusters."""
