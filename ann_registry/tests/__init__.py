"""
Tests Module: Unit and Integration Tests

Test Coverage:
    - Core types, errors and configuration
    - Distance kernels for every metric
    - HNSW build/search and graph invariants
    - Dump format round-trips and corruption handling
    - Registry semantics and concurrency in both lock modes
    - Foreign boundary marshaling
    - Logging, metrics and the CLI
"""
