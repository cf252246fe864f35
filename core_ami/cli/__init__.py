"""Command line interface for the AMI manager.

Commands:

- copy: replicate an image to regions and share it with accounts
- cleanup: remove older generations of an image
- remove: remove a single image and its snapshots
"""
