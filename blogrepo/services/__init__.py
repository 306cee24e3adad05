# Services package.
#
# The repository layer of the blog, leaves first:
#
#   slug_index          — slug normalization and per-type uniqueness checks
#   pagination          — page clamping and pure slicing
#   query_builder       — PostQuery -> WHERE clauses + default ordering
#   tag_service         — tag resolution and post/tag association sync
#   content_repository  — public operations and the transaction boundary
#
# ContentRepository wraps the request's AsyncSession and commits its own
# writes; the helper modules only flush.
