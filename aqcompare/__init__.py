"""
Air-Quality Model Comparison
============================

Compares regression models for annual PM2.5 concentrations at monitoring
sites.

Modules:
    - data_loader: CSV ingestion (file or URL) and schema checks
    - preprocessing: Seeded train/test split and standardization
    - feature_selection: Correlation ranking and PCA predictor selection
    - eda: Exploratory plots of the training set
    - mars: Multivariate adaptive regression splines estimator
    - model: Linear, Poisson, random forest and MARS trainers
    - evaluation: Test-set RMSE and model ranking
    - exceptions: Pipeline error types
"""

__version__ = "1.0.0"
__author__ = "aqcompare developers"
