"""
webkit - Services Package
===========================

What:  Helpers that talk to systems outside this process.

Service Inventory:
    - api_client.call_api: Outbound HTTP call (JSON or multipart upload)
      with a hard timeout, decoding the JSON response into a caller type.
"""
