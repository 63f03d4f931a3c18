from ilamm.linear_model import ncvx, cv_ncvx, FitResult, CVResult, SearchDivergence, tau_const
from ilamm.linear_model import ncvx_reg, ncvx_huber_reg, cv_ncvx_reg, cv_ncvx_huber_reg
