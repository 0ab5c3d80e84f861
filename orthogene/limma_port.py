"""
Essential limma functions ported for orthogene.

Port of limma's lmFit (ordinary least squares path), squeezeVar, eBayes
and the moderated F-test used to flag genes that vary across cell types.
"""

import numpy as np
import pandas as pd
import scipy.sparse as sp
from scipy import stats

from .classes import MArrayLM
from .check import check_level2annot
from .utils import messager, model_matrix, model_matrix_group, intercept_columns


def is_fullrank(x):
    """Check if a matrix is full column rank.

    Port of limma's is.fullrank().
    """
    x = np.asarray(x, dtype=np.float64)
    if x.ndim == 1:
        x = x.reshape(-1, 1)
    return np.linalg.matrix_rank(x) == x.shape[1]


def lm_fit(exp, design, genes=None):
    """Fit a linear model to each gene.

    Port of limma's lmFit() for the unweighted case.

    Parameters
    ----------
    exp : ndarray or scipy.sparse matrix
        Genes x cells.
    design : array-like
        Design matrix (cells x coefficients).
    genes : array-like, optional
        Gene names stored on the fit.

    Returns
    -------
    MArrayLM
    """
    y = exp.toarray() if sp.issparse(exp) else np.asarray(exp, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    coef_names = list(design.columns) if isinstance(design, pd.DataFrame) else None
    design = np.asarray(design, dtype=np.float64)

    if y.ndim != 2:
        raise ValueError("exp must be a 2D array shaped (genes, cells)")
    n_genes, n_cells = y.shape
    if design.shape[0] != n_cells:
        raise ValueError(f"design has {design.shape[0]} rows but exp has {n_cells} columns")
    if not is_fullrank(design):
        raise ValueError("Design matrix is not of full rank: "
                         "some coefficients are not estimable")

    p = design.shape[1]
    beta = np.linalg.lstsq(design, y.T, rcond=None)[0]  # p x genes
    fitted = (design @ beta).T
    resid = y - fitted
    df = n_cells - p
    if df > 0:
        sigma = np.sqrt(np.sum(resid * resid, axis=1) / df)
    else:
        sigma = np.full(n_genes, np.nan, dtype=np.float64)

    cov_coef = np.linalg.inv(design.T @ design)
    stdev_unscaled = np.tile(np.sqrt(np.diag(cov_coef)), (n_genes, 1))

    return MArrayLM(
        coefficients=beta.T,
        stdev_unscaled=stdev_unscaled,
        sigma=sigma,
        df_residual=np.full(n_genes, df, dtype=np.float64),
        cov_coefficients=cov_coef,
        design=design,
        coef_names=coef_names,
        Amean=y.mean(axis=1),
        genes=pd.Index(genes) if genes is not None else None,
    )


def squeeze_var(var, df):
    """Empirical Bayes moderation of genewise variances.

    Port of limma's squeezeVar() without covariate trend or robust
    estimation.

    Parameters
    ----------
    var : array-like
        Genewise variances.
    df : array-like or float
        Residual degrees of freedom.

    Returns
    -------
    dict with keys: var_post, var_prior, df_prior
    """
    var = np.asarray(var, dtype=np.float64)
    n = len(var)
    if n == 0:
        raise ValueError("var is empty")
    if n < 3:
        return {'var_post': var.copy(), 'var_prior': var.copy(), 'df_prior': 0.0}

    df = np.atleast_1d(np.asarray(df, dtype=np.float64))
    if len(df) == 1:
        df = np.full(n, df[0])

    var = var.copy()
    var[df == 0] = 0

    ok = np.isfinite(var) & np.isfinite(df) & (df > 0)
    if not np.any(ok):
        return {'var_post': var, 'var_prior': np.nan, 'df_prior': 0.0}

    fit = _fit_f_dist(var[ok], df[ok])
    var_prior = fit['s2']
    df_prior = fit['df2']
    var_post = _posterior_var(var, df, var_prior, df_prior)
    return {'var_post': var_post, 'var_prior': var_prior, 'df_prior': df_prior}


def _posterior_var(var, df, var_prior, df_prior):
    """Compute posterior variance: (df*var + df_prior*var_prior) / (df + df_prior)."""
    total_df = df + df_prior
    if np.isinf(df_prior):
        return np.full(len(var), var_prior, dtype=np.float64)
    with np.errstate(invalid='ignore', divide='ignore'):
        var_post = (df * var + df_prior * var_prior) / np.where(total_df == 0, 1, total_df)
    var_post[total_df <= 0] = var[total_df <= 0]
    return var_post


def _fit_f_dist(x, df1):
    """Fit a scaled F-distribution to data.

    Moment matching to estimate s2 (scale) and df2 (prior df).
    Port of limma's fitFDist() (no-covariate case).
    """
    x = np.asarray(x, dtype=np.float64)
    n = len(x)
    df1 = np.atleast_1d(np.asarray(df1, dtype=np.float64))
    if len(df1) == 1:
        df1 = np.full(n, df1[0])

    if n == 0:
        return {'s2': np.nan, 'df2': np.nan}
    if n == 1:
        return {'s2': float(x[0]), 'df2': 0.0}

    ok = np.isfinite(df1) & (df1 > 1e-15) & np.isfinite(x) & (x > -1e-15)
    nok = int(np.sum(ok))
    if nok <= 1:
        if nok == 1:
            return {'s2': float(x[ok][0]), 'df2': 0.0}
        return {'s2': np.nan, 'df2': np.nan}

    x_ok = np.maximum(x[ok], 0.0)
    df1_ok = df1[ok]

    # Zero variances would send log(x) to -inf
    m = np.median(x_ok)
    if m == 0:
        m = 1.0
    x_ok = np.maximum(x_ok, 1e-5 * m)

    z = np.log(x_ok)
    e = z + logmdigamma(df1_ok / 2)
    emean = np.mean(e)
    evar = np.sum((e - emean) ** 2) / (nok - 1)
    evar = evar - np.mean(_trigamma(df1_ok / 2))

    if evar > 0:
        df2 = 2.0 * _trigamma_inverse(evar)
        df2 = max(df2, 1e-6)
        if df2 > 1e15:
            df2 = np.inf
            s2 = float(np.exp(emean))
        else:
            s2 = float(np.exp(emean - logmdigamma(df2 / 2)))
    else:
        df2 = np.inf
        s2 = float(np.mean(x_ok))

    return {'s2': max(s2, 1e-15), 'df2': df2}


def _trigamma(x):
    from scipy.special import polygamma
    return polygamma(1, np.asarray(x, dtype=np.float64))


def _trigamma_inverse(x):
    """Inverse of the trigamma function.

    Port of limma's trigammaInverse(), Newton's method.
    """
    from scipy.special import polygamma

    x = float(x)
    if x > 1e7 or x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x
    for _ in range(50):
        tri = float(polygamma(1, y))
        dif = tri * (1 - tri / x) / float(polygamma(2, y))
        y = y + dif
        if abs(dif / y) < 1e-8:
            break
    return y


def logmdigamma(x):
    """Compute log(x) - digamma(x) avoiding subtractive cancellation.

    Port of statmod's logmdigamma(): recursive shift for small values
    and asymptotic expansion for large ones.
    """
    x = np.asarray(x, dtype=np.float64)
    scalar_input = x.ndim == 0
    x = np.atleast_1d(x)
    result = np.full_like(x, np.nan)

    valid = x > 0
    if not np.any(valid):
        return float(result[0]) if scalar_input else result

    def _asymptotic(z):
        inv_z2 = 1.0 / (z * z)
        tail = inv_z2 * (-1.0/12 + inv_z2 * (1.0/120 + inv_z2 * (-1.0/252 + inv_z2 * (
            1.0/240 + inv_z2 * (-1.0/132 + inv_z2 * (691.0/32760 + inv_z2 * (
            -1.0/12 + 3617.0/8160 * inv_z2)))))))
        return 1.0 / (2.0 * z) - tail

    xv = x[valid]
    rv = np.empty_like(xv)
    large = xv >= 5
    small = ~large
    if np.any(large):
        rv[large] = _asymptotic(xv[large])
    if np.any(small):
        z = xv[small]
        z5 = z + 5.0
        rv[small] = (np.log(z / z5) + _asymptotic(z5)
                     + 1.0/z + 1.0/(z+1) + 1.0/(z+2) + 1.0/(z+3) + 1.0/(z+4))

    result[valid] = rv
    return float(result[0]) if scalar_input else result


def _f_sf(F, df1, df2):
    """Upper tail of the F distribution, allowing infinite df2."""
    F = np.asarray(F, dtype=np.float64)
    df2 = np.broadcast_to(np.asarray(df2, dtype=np.float64), F.shape)
    p = np.empty_like(F)
    inf = np.isinf(df2)
    p[inf] = stats.chi2.sf(F[inf] * df1, df1)
    p[~inf] = stats.f.sf(F[~inf], df1, df2[~inf])
    return p


def _tmixture_vector(tstat, stdev_unscaled, df, proportion, v0_lim=None):
    """Prior variance of the non-null coefficients from the top t-statistics.

    Port of limma's tmixture.vector().
    """
    ok = np.isfinite(tstat)
    tstat = np.abs(tstat[ok])
    stdev_unscaled = stdev_unscaled[ok]
    df = df[ok]
    n = len(tstat)
    ntarget = int(np.ceil(proportion / 2 * n))
    if ntarget < 1:
        return np.nan
    p = max(ntarget / n, proportion)

    ttarget = np.quantile(tstat, (n - ntarget) / (n - 1)) if n > 1 else tstat[0]
    top = tstat >= ttarget
    tstat = tstat[top]
    v1 = stdev_unscaled[top] ** 2
    df = df[top]
    r = ntarget - stats.rankdata(tstat) + 1
    p0 = 2 * stats.t.sf(tstat, df)
    ptarget = ((r - 0.5) / len(tstat) - (1 - p) * p0) / p
    v0 = np.zeros(len(tstat))
    pos = ptarget > p0
    if np.any(pos):
        qtarget = stats.t.isf(ptarget[pos] / 2, df[pos])
        v0[pos] = v1[pos] * ((tstat[pos] / qtarget) ** 2 - 1)
    if v0_lim is not None:
        v0 = np.clip(v0, v0_lim[0], v0_lim[1])
    return float(np.mean(v0))


def _lods(t, stdev_unscaled, df_total, s2_prior, df_prior, proportion,
          stdev_coef_lim=(0.1, 4.0)):
    """B-statistics (log-odds of differential expression) per coefficient."""
    s2_prior = float(np.nanmedian(np.atleast_1d(s2_prior)))
    var_prior_lim = np.asarray(stdev_coef_lim, dtype=np.float64) ** 2 / s2_prior
    n_coef = t.shape[1]
    var_prior = np.array([
        _tmixture_vector(t[:, j], stdev_unscaled[:, j], df_total, proportion,
                         var_prior_lim)
        for j in range(n_coef)])
    var_prior[np.isnan(var_prior)] = 1.0 / s2_prior

    r = (stdev_unscaled ** 2 + var_prior[None, :]) / stdev_unscaled ** 2
    t2 = t ** 2
    df = df_total[:, None]
    with np.errstate(divide='ignore', invalid='ignore'):
        if df_prior > 1e6:
            kernel = t2 * (1 - 1 / r) / 2
        else:
            kernel = (1 + df) / 2 * np.log((t2 + df) / (t2 / r + df))
    return np.log(proportion / (1 - proportion)) - np.log(r) / 2 + kernel, var_prior


def e_bayes(fit, proportion=0.01, coef=None):
    """Empirical Bayes moderated t- and F-statistics.

    Port of limma's eBayes() (trend=False, robust=False).

    Parameters
    ----------
    fit : MArrayLM
        Result of :func:`lm_fit`.
    proportion : float
        Assumed proportion of genes that are differentially expressed,
        used for the B-statistics (``lods``).
    coef : list of int, optional
        Coefficients tested jointly by the F-statistic. Defaults to all
        non-intercept coefficients, i.e. a one-way ANOVA over the groups
        of the design.

    Returns
    -------
    MArrayLM with s2_prior, df_prior, s2_post, df_total, t, p_value,
    var_prior, lods, F, F_p_value and F_coef added.
    """
    if not 0 < proportion < 1:
        raise ValueError("proportion must be strictly between 0 and 1")
    out = fit._copy()
    coefficients = out['coefficients']
    stdev_unscaled = out['stdev_unscaled']
    sigma = out['sigma']
    df_residual = out['df_residual']

    if coefficients.shape[0] == 0:
        raise ValueError("No genes to fit")
    if not np.any(df_residual > 0):
        raise ValueError("No residual degrees of freedom in linear model fits")

    sv = squeeze_var(sigma ** 2, df_residual)
    s2_post = sv['var_post']
    df_prior = sv['df_prior']
    df_pooled = np.nansum(df_residual)
    df_total = np.minimum(df_residual + df_prior, df_pooled)

    with np.errstate(divide='ignore', invalid='ignore'):
        t = coefficients / stdev_unscaled / np.sqrt(s2_post)[:, None]
    p_value = 2 * stats.t.sf(np.abs(t), df_total[:, None])

    if coef is None:
        intercepts = set(intercept_columns(out['design']))
        coef = [i for i in range(coefficients.shape[1]) if i not in intercepts]
    coef = list(coef)
    if len(coef) == 0:
        raise ValueError("No coefficients to test: the design has only an intercept")

    # F = b' C^-1 b / (r s2), equivalent to limma's classifyTestsF on t
    b = coefficients[:, coef]
    C = out['cov_coefficients'][np.ix_(coef, coef)]
    r = int(np.linalg.matrix_rank(C))
    C_inv = np.linalg.pinv(C)
    with np.errstate(divide='ignore', invalid='ignore'):
        F = np.einsum('gi,ij,gj->g', b, C_inv, b) / (r * s2_post)

    out['s2_prior'] = sv['var_prior']
    out['df_prior'] = df_prior
    out['s2_post'] = s2_post
    out['df_total'] = df_total
    out['t'] = t
    out['p_value'] = p_value
    out['lods'], out['var_prior'] = _lods(t, stdev_unscaled, df_total, sv['var_prior'],
                                          df_prior, proportion)
    out['F'] = F
    out['F_p_value'] = _f_sf(F, r, df_total)
    out['F_coef'] = coef
    return out


def run_limma(exp, level2annot, design=None, metadata=None, verbose=True):
    """Test each gene for variation across cell types.

    Fits ``~level2annot`` with :func:`lm_fit` and moderates the
    F-statistic with :func:`e_bayes`.

    Parameters
    ----------
    exp : ndarray or scipy.sparse matrix
        Genes x cells.
    level2annot : array-like
        Cell type of each cell.
    design : str, optional
        Patsy formula evaluated on ``metadata`` plus a ``level2annot``
        column, e.g. ``'~ level2annot + batch'``. The F-test covers the
        level2annot coefficients only.
    metadata : DataFrame, optional
        Cell metadata for formula designs.
    verbose : bool

    Returns
    -------
    MArrayLM
    """
    messager("DGE:: Limma...", v=verbose)
    level2annot = check_level2annot(level2annot, exp.shape[1])
    if len(np.unique(level2annot)) < 2:
        raise ValueError("At least two cell types are required for the F-test")

    if design is None:
        X, levels = model_matrix_group(level2annot)
        fit = lm_fit(exp, X)
        fit['levels'] = levels
        return e_bayes(fit)

    data = pd.DataFrame(index=np.arange(len(level2annot)))
    if metadata is not None:
        data = metadata.reset_index(drop=True).copy()
    data['level2annot'] = level2annot
    X = model_matrix(design, data)
    coef = [i for i, c in enumerate(X.columns) if c.startswith('level2annot')]
    if len(coef) == 0:
        raise ValueError("Design formula must include level2annot")
    fit = lm_fit(exp, X)
    return e_bayes(fit, coef=coef)
