"""Web evidence: search (Serper), page scraping, mail-domain checks."""
