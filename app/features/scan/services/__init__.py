"""
Scan Services

Organized by responsibility:

1. guard/ - Network-origin checks
   - dns_guard.py: resolves A/AAAA and refuses private or internal targets

2. engine/ - Browser automation and rule execution
   - browser.py: headless Chrome setup and probe
   - axe_scanner.py: navigation, stability wait, axe run with retry

3. analysis/ - Pure result derivation
   - result_deriver.py: score, categories, sanitized selectors
   - rule_guidance.py: remediation text per rule

4. jobs/ and reports/ - Persistence
   - job_store.py: scan job lifecycle (queued -> running -> terminal)
   - report_store.py: one report per domain, visibility rules

5. orchestration/ - Request to result
   - pipeline.py: submit, execute, drain the queue, polling payload

6. client.py - Submit-and-poll client for the HTTP API
"""
