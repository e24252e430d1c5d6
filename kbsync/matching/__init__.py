"""Diffing algorithm for website sync.

  similarity.match    - best existing entry for a candidate, with a score
  classifier.classify - NEW / UNCHANGED / CONFLICT for a matched candidate
"""
