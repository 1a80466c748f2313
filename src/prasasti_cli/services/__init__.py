"""Services built on the core: documentation generation, workspace scans, fixes."""
