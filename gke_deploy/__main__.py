"""Entry point for running gke-deploy as `python -m gke_deploy`."""

from gke_deploy.tool.gke_deploy import main

main()
