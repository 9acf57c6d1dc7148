"""Regional EV subsidy scraper for ev.or.kr."""

__version__ = "1.0.0"
