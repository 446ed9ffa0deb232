"""Tests for the gke-deploy command line tool."""
