"""Cloud storage backends for blobgit.

This package provides blob stores that keep repositories in cloud object
storage instead of on local disk.

Available backends:
- GCS (Google Cloud Storage): Store refs and packs in a Google Cloud Storage bucket
"""
