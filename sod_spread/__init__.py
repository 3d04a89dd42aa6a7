"""sod-spread: stochastic landscape spread model of Sudden Oak Death.

A raster-based, week-stepped simulation of Phytophthora ramorum spread:
  - Sporulation on infected bay laurel (UMCA), scaled by weather
  - Cauchy (or Cauchy mixture) dispersal with von Mises wind bias
  - Infection of susceptible bay laurel and oaks, capped by live trees
  - Independent ensemble runs executed in parallel
  - Ensemble mean and standard deviation maps per year and at the end
"""

__version__ = "0.1.0"
