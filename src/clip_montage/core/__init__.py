"""Process, filesystem and job-store plumbing shared by the pipeline."""
