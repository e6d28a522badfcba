"""SCIM directory sync.

Pulls users from a SCIM 2.0 directory API with offset pagination, flattens
them, replaces a BigQuery staging table with the result and merges it into
the durable users table keyed on the SCIM id.
"""
