"""Demo orchestration — sequencing, selective-sync analysis and rendering."""
