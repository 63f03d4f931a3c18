import warnings
import multiprocessing
from collections import namedtuple

import numpy as np
from scipy.stats import median_abs_deviation
from joblib import Parallel, delayed


FitResult = namedtuple('FitResult', ['beta', 'phi', 'penalty', 'Lambda', 'tau',
                                     'ite_tightening', 'converged'])

CVResult = namedtuple('CVResult', ['beta', 'penalty', 'lambda_seq', 'mse', 'lambda_min',
                                   'nfolds', 'tau_seq', 'tau_min', 'model'])


class SearchDivergence(RuntimeError):
    '''
        The LAMM search failed to find a majorizing isotropic quadratic.
    '''


def tau_const(ntau=5):
    '''
        Powers of 2 that scale the default tau sequence in cross-validation,
        e.g. [1/4, 1/2, 1, 2, 4] for ntau = 5 and [1/2, 1, 2, 4] for ntau = 4.
    '''
    if ntau < 1:
        raise ValueError("ntau must be a positive integer")
    end = ntau // 2
    start = end if ntau % 2 else end - 1
    return np.r_[2.0 ** -np.arange(start, 0, -1), 2.0 ** np.arange(end + 1)]


def check_options(opt):
    if opt['phi0'] <= 0:
        raise ValueError("phi0 must be positive")
    if opt['gamma'] <= 1:
        raise ValueError("gamma must be larger than 1")
    if opt['max_iter'] < 1:
        raise ValueError("max_iter must be a positive integer")
    if opt['max_phi'] <= 0:
        raise ValueError("max_phi must be positive")
    return opt


def check_positive(x, name):
    x = np.asarray(x, dtype=float)
    if x.size == 0 or np.any(x <= 0):
        raise ValueError(name + " must be positive")
    return x


def check_scalar(x, name):
    x = check_positive(x, name)
    if x.size != 1:
        raise ValueError(name + " must be a scalar")
    return float(x.reshape(-1)[0])


class ncvx():
    '''
        Regularized Linear Regression with Lasso, SCAD and MCP Penalties via I-LAMM
                        (iterative local adaptive majorize-minimization)

    References
    ----------
    I-LAMM for Sparse Learning: Simultaneous Control of Algorithmic Complexity
    and Statistical Error (2018)
    by Jianqing Fan, Han Liu, Qiang Sun and Tong Zhang
    The Annals of Statistics 46(2): 814--841.

    Iteratively Reweighted l1-Penalized Robust Regression (2021)
    by Xiaoou Pan, Qiang Sun and Wenxin Zhou
    Electronic Journal of Statistics 15(1): 3287--3348.
    '''
    penalties = ["Lasso", "SCAD", "MCP"]
    losses = ["l2", "Huber"]
    opt = {'phi0': 0.001, 'gamma': 1.5, 'epsilon_c': 1e-4, 'epsilon_t': 1e-4,
           'max_iter': 500, 'max_phi': 1e10}

    def __init__(self, X, Y, intercept=False, itcp_included=False, options={}):
        '''
        Arguments
        ---------
        X : n by d matrix of covariates; each row is an observation vector.

        Y : n-dimensional vector of response variables.

        intercept : logical flag for fitting an intercept; default is FALSE.
                    If FALSE, the first coefficient is kept at zero.

        itcp_included : logical flag indicating that the first column of X
                        is already a column of ones; default is FALSE.

        options : a dictionary of internal optimization parameters.

            phi0 : initial (and smallest) value of the isotropic parameter phi;
                   default is 0.001.

            gamma : inflation factor (> 1) of phi in the LAMM search; default is 1.5.

            epsilon_c : tolerance of the contraction stage; the iteration stops when
                        |beta^{k+1} - beta^k|_2 / sqrt(d+1) <= epsilon_c; default is 1e-4.

            epsilon_t : tolerance of the tightening stage; default is 1e-4.

            max_iter : maximum number of iterations in either the contraction or
                       the tightening stage; default is 500.

            max_phi : the LAMM search fails once phi exceeds max_phi * max(1, phi0);
                      default is 1e10.
        '''
        X = np.asarray(X, dtype=float)
        Y = np.asarray(Y, dtype=float)
        if X.ndim != 2:
            raise ValueError("X must be a two-dimensional array")
        self.n = X.shape[0]
        if Y.size != self.n:
            raise ValueError("number of rows of X must match the length of Y")
        self.Y = Y.reshape(self.n)
        self.itcp = intercept
        self.itcp_included = itcp_included
        if itcp_included:
            self.X = X
        else:
            self.X = np.c_[np.ones(self.n), X]
        self.d = self.X.shape[1] - 1

        self.opt = check_options(dict(self.opt, **options))


    def soft_thresh(self, x, c):
        tmp = abs(x) - c
        return np.sign(x) * np.where(tmp <= 0, 0, tmp)

    def penalty_weight(self, beta, Lambda, penalty="SCAD"):
        '''
            Weights of the Weighted L1 Penalty that Majorizes the Concave Penalty at beta

        The intercept (first coordinate) is never penalized.
        '''
        b = abs(beta)
        if penalty == "Lasso":
            rw_lam = Lambda * np.ones(len(b))
        elif penalty == "SCAD":
            a = 3.7
            rw_lam = np.where(b <= Lambda, Lambda,
                              np.where(b <= a * Lambda, (a * Lambda - b) / (a - 1), 0))
        elif penalty == "MCP":
            a = 3
            rw_lam = np.where(b <= a * Lambda, Lambda - b / a, 0)
        else:
            raise ValueError("penalty must be either Lasso, SCAD or MCP")
        rw_lam = rw_lam.astype(float)
        rw_lam[0] = 0
        return rw_lam

    def loss(self, res, loss_type="l2", tau=None):
        if loss_type == "l2":
            return np.mean(res ** 2) / 2
        out = np.where(abs(res) <= tau, 0.5 * res ** 2, tau * abs(res) - 0.5 * tau ** 2)
        return np.mean(out)

    def gradient(self, res, loss_type="l2", tau=None):
        '''
            Gradient of the Empirical Loss with respect to beta

        The intercept component is set to zero when the model has no intercept.
        '''
        if loss_type == "l2":
            w = res
        else:
            w = np.where(abs(res) <= tau, res, tau * np.sign(res))
        grad = -self.X.T.dot(w) / len(res)
        if not self.itcp:
            grad[0] = 0
        return grad

    def prox_step(self, beta, grad, phi, rw_lam):
        return self.soft_thresh(beta - grad / phi, rw_lam / phi)

    def lamm(self, rw_lam, beta, phi, loss_type="l2", tau=None):
        '''
            Local Adaptive Majorize-Minimization (LAMM) Step

        Starting from phi, inflate phi by self.opt['gamma'] until the isotropic
        quadratic function

            loss(beta) + <grad(beta), beta1 - beta> + phi/2 * |beta1 - beta|_2^2

        majorizes the loss at the proximal update beta1.

        Returns
        -------
        beta1 : updated coefficients.

        phi : value of the isotropic parameter at which the majorization holds.
        '''
        res = self.Y - self.X.dot(beta)
        loss_eval0 = self.loss(res, loss_type, tau)
        grad0 = self.gradient(res, loss_type, tau)

        phi_bound = self.opt['max_phi'] * max(1, self.opt['phi0'])
        while True:
            beta1 = self.prox_step(beta, grad0, phi, rw_lam)
            diff_beta = beta1 - beta
            loss_proxy = loss_eval0 + diff_beta.dot(grad0) + 0.5 * phi * diff_beta.dot(diff_beta)
            loss_eval1 = self.loss(self.Y - self.X.dot(beta1), loss_type, tau)
            if loss_eval1 <= loss_proxy:
                return beta1, phi
            if not (np.isfinite(loss_eval1) and np.isfinite(loss_proxy)):
                raise SearchDivergence("non-finite loss in the LAMM search")
            phi *= self.opt['gamma']
            if not phi <= phi_bound:
                raise SearchDivergence("LAMM search exceeded phi = %g" % phi_bound)

    def contract(self, rw_lam, beta, tol, loss_type="l2", tau=None):
        '''
            Solve the Weighted L1-Penalized Problem by Repeated LAMM Steps

        Returns
        -------
        beta1 : final iterate.

        phi : isotropic parameter carried to the next round.

        converged : FALSE if self.opt['max_iter'] rounds were used up.
        '''
        phi0, gamma = self.opt['phi0'], self.opt['gamma']
        phi, count = phi0, 0
        scale = np.sqrt(self.d + 1)
        while count < self.opt['max_iter']:
            beta1, phi = self.lamm(rw_lam, beta, phi, loss_type, tau)
            phi = max(phi0, phi / gamma)
            count += 1
            if np.linalg.norm(beta1 - beta) / scale <= tol:
                return beta1, phi, True
            beta = beta1
        return beta1, phi, False

    def ilamm(self, Lambda, penalty="SCAD", loss_type="l2", tau=None):
        '''
            I-LAMM: Contraction from Zero Followed by Tightening

        For SCAD and MCP each tightening step re-weights the L1 penalty at the
        current estimate and solves the resulting convex problem. Lasso stops
        after the contraction stage.
        '''
        if penalty not in self.penalties:
            raise ValueError("penalty must be either Lasso, SCAD or MCP")
        if loss_type not in self.losses:
            raise ValueError("loss_type must be either l2 or Huber")

        scale = np.sqrt(self.d + 1)
        beta = np.zeros(self.d + 1)
        state, ite_t, converged = "contracting", 0, True
        while state != "done":
            if state == "contracting":
                rw_lam = self.penalty_weight(beta, Lambda, penalty)
                beta, phi, conv = self.contract(rw_lam, beta, self.opt['epsilon_c'],
                                                loss_type, tau)
                converged = converged and conv
                state = "done" if penalty == "Lasso" else "tightening"
            elif ite_t >= self.opt['max_iter']:
                converged, state = False, "done"
            else:
                ite_t += 1
                rw_lam = self.penalty_weight(beta, Lambda, penalty)
                beta1, phi, conv = self.contract(rw_lam, beta, self.opt['epsilon_t'],
                                                 loss_type, tau)
                converged = converged and conv
                dev = np.linalg.norm(beta1 - beta) / scale
                beta = beta1
                if dev <= self.opt['epsilon_t']:
                    state = "done"

        return FitResult(beta, phi, penalty, Lambda, tau, ite_t, converged)

    def lambda_range(self):
        '''
            lambda_max = max_j |Y^T X_j| / n and lambda_min = 0.01 * lambda_max
        '''
        lambda_max = np.max(abs(self.Y.dot(self.X))) / self.n
        return lambda_max, 0.01 * lambda_max

    def lambda_default(self):
        lambda_max, lambda_min = self.lambda_range()
        return np.exp(0.7 * np.log(lambda_max) + 0.3 * np.log(lambda_min))

    def lambda_seq(self, nlambda=30):
        '''
            nlambda Values from lambda_min to lambda_max, Equally Spaced on the Log Scale
        '''
        if nlambda < 1:
            raise ValueError("nlambda must be a positive integer")
        lambda_max, lambda_min = self.lambda_range()
        return np.exp(np.linspace(np.log(lambda_min), np.log(lambda_max), nlambda))

    def tau_scale(self, beta):
        '''
            sigma_MAD * sqrt(n / log(n*d)), where sigma_MAD is the normalized median
            absolute deviation of the residuals Y - X beta
        '''
        res = self.Y - self.X.dot(beta)
        sigma = median_abs_deviation(res) / 0.6745
        return sigma * np.sqrt(self.n / np.log(self.n * self.d))

    def tau_default(self, Lambda):
        return self.tau_scale(self.ilamm(Lambda, "Lasso").beta)

    def fit(self, Lambda=None, penalty="SCAD"):
        '''
            Penalized Least Squares Regression

        Arguments
        ---------
        Lambda : regularization parameter (> 0). If unspecified, it is set to
                 exp(0.7 * log(lambda_max) + 0.3 * log(lambda_min)); see self.lambda_range().

        penalty : a character string representing one of the built-in penalties;
                  default is "SCAD".

        Returns
        -------
        FitResult with fields

        'beta' : a numpy array of d+1 estimated coefficients; the first one is the intercept.

        'phi' : isotropic parameter after the last iteration.

        'penalty' : the penalty.

        'Lambda' : lambda value.

        'tau' : None.

        'ite_tightening' : number of tightening steps; 0 for Lasso.

        'converged' : FALSE if either stage reached self.opt['max_iter'].
        '''
        if penalty not in self.penalties:
            raise ValueError("penalty must be either Lasso, SCAD or MCP")
        if Lambda is None:
            Lambda = self.lambda_default()
        else:
            Lambda = check_scalar(Lambda, "Lambda")
        return self.ilamm(Lambda, penalty)

    def huber(self, Lambda=None, penalty="SCAD", tau=None):
        '''
            Penalized Huber Regression

        Arguments
        ---------
        Lambda : regularization parameter (> 0); see self.fit().

        penalty : a character string representing one of the built-in penalties;
                  default is "SCAD".

        tau : robustification parameter (> 0) of the Huber loss. If unspecified,
              it is computed by self.tau_default() from the Lasso fit at Lambda.

        Returns
        -------
        FitResult; see self.fit(). 'tau' is the tau value used.
        '''
        if penalty not in self.penalties:
            raise ValueError("penalty must be either Lasso, SCAD or MCP")
        if Lambda is None:
            Lambda = self.lambda_default()
        else:
            Lambda = check_scalar(Lambda, "Lambda")
        if tau is None:
            tau = self.tau_default(Lambda)
        else:
            tau = check_scalar(tau, "tau")
        return self.ilamm(Lambda, penalty, "Huber", tau)

    def predict(self, beta, X=None):
        '''
            Fitted Values; new covariates X are augmented the same way as the training design.
        '''
        if X is None:
            return self.X.dot(beta)
        X = np.asarray(X, dtype=float)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        if not self.itcp_included:
            X = np.c_[np.ones(X.shape[0]), X]
        return X.dot(beta)



class cv_ncvx():
    '''
        Cross-Validated Regularized (Huber) Regression via I-LAMM
    '''
    penalties = ["Lasso", "SCAD", "MCP"]

    def __init__(self, X, Y, intercept=False, itcp_included=False, options={}):
        self.init = ncvx(X, Y, intercept, itcp_included, options)
        self.X, self.Y = self.init.X, self.init.Y
        self.n = self.init.n
        self.itcp = intercept
        self.opt = self.init.opt

    def divide_sample(self, nfolds=3):
        '''
            Divide the Sample into V=nfolds Contiguous Folds

        Each fold has n // nfolds observations; the last one also takes the remainder.
        '''
        idx, size = np.arange(self.n), self.n // nfolds
        folds = [idx[v*size:(v+1)*size] for v in range(nfolds - 1)]
        folds.append(idx[(nfolds-1)*size:])
        return idx, folds

    def check_nfolds(self, nfolds):
        if nfolds > 10 or nfolds > self.n:
            nfolds = min(self.n, 10)
            warnings.warn("number of folds is too large, it is set to be %d" % nfolds)
        if nfolds < 2:
            raise ValueError("nfolds must be at least 2")
        return nfolds

    def check_ncore(self, parallel, ncore):
        if not parallel:
            return ncore
        max_ncore = multiprocessing.cpu_count()
        if ncore is None: ncore = max_ncore
        if ncore > max_ncore: raise ValueError("number of cores exceeds the limit")
        return ncore

    def fold_pred(self, idx, fold, Lambda, penalty, tau=None):
        '''
            Fit on the Complement of a Fold and Predict on the Fold
        '''
        train = np.setdiff1d(idx, fold)
        model = ncvx(self.X[train], self.Y[train], self.itcp, True, self.opt)
        if tau is None:
            fit = model.fit(Lambda, penalty)
        else:
            fit = model.huber(Lambda, penalty, tau)
        return self.X[fold].dot(fit.beta)

    def cv_err(self, grid, nfolds, penalty, parallel=False, ncore=None):
        '''
            Cross-Validation Errors over a Grid of (Lambda, tau) Pairs

        For every grid point the held-out predictions of all folds are collected
        into one n-vector Y_pred, and the error is |Y - Y_pred|_2.
        '''
        idx, folds = self.divide_sample(nfolds)
        tasks = [(l, v) for l in range(len(grid)) for v in range(nfolds)]

        def cv_task(task):
            Lambda, tau = grid[task[0]]
            return self.fold_pred(idx, folds[task[1]], Lambda, penalty, tau)

        if not parallel:
            preds = [cv_task(task) for task in tasks]
        else:
            preds = Parallel(n_jobs=ncore)(delayed(cv_task)(task) for task in tasks)

        Y_pred, err = np.zeros(self.n), np.zeros(len(grid))
        for (l, v), pred in zip(tasks, preds):
            Y_pred[folds[v]] = pred
            if v == nfolds - 1:
                err[l] = np.linalg.norm(self.Y - Y_pred)
        return err

    def lambda_grid(self, lambda_seq, nlambda):
        if lambda_seq is None:
            return self.init.lambda_seq(nlambda)
        return check_positive(lambda_seq, "lambda_seq").reshape(-1)

    def fit(self, lambda_seq=None, nlambda=30, nfolds=3, penalty="SCAD",
            parallel=False, ncore=None):
        '''
            K-fold Cross-Validation for Penalized Least Squares Regression

        Arguments
        ---------
        lambda_seq : a numpy array of lambda values. If unspecified, nlambda values
                     equally spaced on the log scale from lambda_min to lambda_max.

        nlambda : number of lambda values if lambda_seq is unspecified; default is 30.

        nfolds : number of folds, at most min(10, n); default is 3.

        penalty : a character string representing one of the built-in penalties;
                  default is "SCAD".

        parallel : logical flag to fit the folds using parallel computing; default is FALSE.

        ncore : the number of cores used for parallel computing.

        Returns
        -------
        CVResult with fields

        'beta' : estimate refitted on the full sample at lambda_min.

        'penalty' : the penalty.

        'lambda_seq' : lambda values.

        'mse' : cross-validation errors, one per lambda value.

        'lambda_min' : lambda value with the smallest cross-validation error.

        'nfolds' : number of folds used.

        'model' : FitResult of the refitted model.
        '''
        if penalty not in self.penalties:
            raise ValueError("penalty must be either Lasso, SCAD or MCP")
        lambda_seq = self.lambda_grid(lambda_seq, nlambda)
        nfolds = self.check_nfolds(nfolds)
        ncore = self.check_ncore(parallel, ncore)

        mse = self.cv_err([(lam, None) for lam in lambda_seq], nfolds, penalty, parallel, ncore)
        lambda_min = lambda_seq[np.argmin(mse)]
        model = self.init.fit(lambda_min, penalty)

        return CVResult(model.beta, penalty, lambda_seq, mse, lambda_min, nfolds,
                        None, None, model)

    def huber(self, lambda_seq=None, nlambda=30, tau_seq=None, ntau=5, nfolds=3,
              penalty="SCAD", parallel=False, ncore=None):
        '''
            K-fold Cross-Validation for Penalized Huber Regression over (lambda, tau)

        Arguments
        ---------
        tau_seq : a numpy array of tau values. If unspecified, it is tau_const(ntau)
                  multiplied by init.tau_scale() of the cross-validated Lasso estimate.

        ntau : number of tau values if tau_seq is unspecified; default is 5.

        The remaining arguments are the same as in self.fit().

        Returns
        -------
        CVResult; see self.fit(). 'mse' is an nlambda by ntau array, and 'tau_seq',
        'tau_min' are filled in.
        '''
        if penalty not in self.penalties:
            raise ValueError("penalty must be either Lasso, SCAD or MCP")
        lambda_seq = self.lambda_grid(lambda_seq, nlambda)
        if tau_seq is None:
            lasso = self.fit(lambda_seq, nfolds=nfolds, penalty="Lasso",
                             parallel=parallel, ncore=ncore)
            tau_seq = self.init.tau_scale(lasso.beta) * tau_const(ntau)
        else:
            tau_seq = check_positive(tau_seq, "tau_seq").reshape(-1)
        nfolds = self.check_nfolds(nfolds)
        ncore = self.check_ncore(parallel, ncore)

        nlambda, ntau = len(lambda_seq), len(tau_seq)
        grid = [(lam, tau) for lam in lambda_seq for tau in tau_seq]
        mse = self.cv_err(grid, nfolds, penalty, parallel, ncore).reshape(nlambda, ntau)

        # first minimum in column-major order, lambda varies fastest
        cv_idx = np.argmin(mse.flatten(order='F'))
        lambda_min, tau_min = lambda_seq[cv_idx % nlambda], tau_seq[cv_idx // nlambda]
        model = self.init.huber(lambda_min, penalty, tau_min)

        return CVResult(model.beta, penalty, lambda_seq, mse, lambda_min, nfolds,
                        tau_seq, tau_min, model)



def ncvx_reg(X, Y, Lambda=None, penalty="SCAD", phi0=0.001, gamma=1.5,
             epsilon_c=1e-4, epsilon_t=1e-4, max_iter=500,
             intercept=False, itcp_included=False):
    '''
        Nonconvex Regularized Regression; see ncvx.fit().
    '''
    options = {'phi0': phi0, 'gamma': gamma, 'epsilon_c': epsilon_c,
               'epsilon_t': epsilon_t, 'max_iter': max_iter}
    return ncvx(X, Y, intercept, itcp_included, options).fit(Lambda, penalty)


def ncvx_huber_reg(X, Y, Lambda=None, penalty="SCAD", tau=None, phi0=0.001, gamma=1.5,
                   epsilon_c=1e-4, epsilon_t=1e-4, max_iter=500,
                   intercept=False, itcp_included=False):
    '''
        Nonconvex Regularized Huber Regression; see ncvx.huber().
    '''
    options = {'phi0': phi0, 'gamma': gamma, 'epsilon_c': epsilon_c,
               'epsilon_t': epsilon_t, 'max_iter': max_iter}
    return ncvx(X, Y, intercept, itcp_included, options).huber(Lambda, penalty, tau)


def cv_ncvx_reg(X, Y, lambda_seq=None, nlambda=30, penalty="SCAD", phi0=0.001, gamma=1.5,
                epsilon_c=1e-4, epsilon_t=1e-4, max_iter=500, nfolds=3,
                intercept=False, itcp_included=False, parallel=False, ncore=None):
    '''
        K-fold Cross-Validation for Nonconvex Regularized Regression; see cv_ncvx.fit().
    '''
    options = {'phi0': phi0, 'gamma': gamma, 'epsilon_c': epsilon_c,
               'epsilon_t': epsilon_t, 'max_iter': max_iter}
    return cv_ncvx(X, Y, intercept, itcp_included, options).fit(lambda_seq, nlambda, nfolds,
                                                                  penalty, parallel, ncore)


def cv_ncvx_huber_reg(X, Y, lambda_seq=None, nlambda=30, penalty="SCAD", tau_seq=None, ntau=5,
                      phi0=0.001, gamma=1.5, epsilon_c=1e-4, epsilon_t=1e-4, max_iter=500,
                      nfolds=3, intercept=False, itcp_included=False, parallel=False, ncore=None):
    '''
        K-fold Cross-Validation for Nonconvex Regularized Huber Regression; see cv_ncvx.huber().
    '''
    options = {'phi0': phi0, 'gamma': gamma, 'epsilon_c': epsilon_c,
               'epsilon_t': epsilon_t, 'max_iter': max_iter}
    return cv_ncvx(X, Y, intercept, itcp_included, options).huber(lambda_seq, nlambda, tau_seq,
                                                                    ntau, nfolds, penalty,
                                                                    parallel, ncore)
