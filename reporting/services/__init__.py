"""Services used by report generation: data fetching, mail feed and the generation itself."""
