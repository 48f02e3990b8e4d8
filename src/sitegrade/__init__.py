"""
sitegrade - batch website analysis with bounded concurrency and graceful degradation.

Submit a batch of URLs, get one result per URL back asynchronously; failing
URLs are retried, circuit-broken and degraded into partial results instead
of failing the batch.

Packages:
    sitegrade.core           errors, classifier, troubleshooting, logging, settings, events
    sitegrade.execution      retry, circuit breaker, timeout, degradation
    sitegrade.observability  metrics and error metrics
    sitegrade.jobs           job model, runner, scheduler
    sitegrade.cli            ``sitegrade`` command line
"""

__version__ = "0.1.0"
