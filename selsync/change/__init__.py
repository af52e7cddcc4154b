"""Change application — manifest edits, version bumps, packaging and the git record.

This package provides the primitives for:
- Parameter store: format-preserving field edits on chart manifests
- Semantic versioning: patch/minor/major bumps
- Packaging: turning a chart directory into a versioned archive
- Record store: the git repository that persists each change
- Change driver: applying all of the above as one logical transaction
"""
