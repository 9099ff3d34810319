"""
Packages module.

Contains the service packages built on the core library:
- commit_source: GitHub commit history streaming source
"""
